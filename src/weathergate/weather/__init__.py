"""Weather collaborator: Open-Meteo client and weather code labels."""

from weathergate.weather.codes import translate_code
from weathergate.weather.open_meteo import OpenMeteoService

__all__ = ["OpenMeteoService", "translate_code"]
