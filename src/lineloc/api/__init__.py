from lineloc.api.builder import LocalizerBuilder, sensor_from_config
from lineloc.api.localizer import Localizer

__all__ = [
    "Localizer",
    "LocalizerBuilder",
    "sensor_from_config",
]
