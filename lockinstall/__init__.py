"""lockinstall - 基于锁文件的依赖安装引擎"""

__version__ = "0.1.0"
