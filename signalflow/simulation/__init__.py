from .core import SimulationConfig, World, load_config

__all__ = ["SimulationConfig", "World", "load_config"]
