from library_engine.config.config import Config, TestingConfig

__all__ = ['Config', 'TestingConfig']
