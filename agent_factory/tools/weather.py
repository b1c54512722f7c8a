"""
Sample weather tools.

Free-standing demo tools returning mock data; they need no instance and
no configuration, which makes them handy for trying out tool requests.
"""

import random
from typing import List

from agent_factory.tools.local import ToolTable

weather_tools = ToolTable()

_CONDITIONS = ["Sunny", "Cloudy", "Rainy", "Partly Cloudy", "Snowy"]


@weather_tools.tool()
def get_current_weather(location: str) -> str:
    """Gets the current weather for a location: temperature in Celsius, conditions and humidity."""
    temperature = random.randint(-10, 35)
    condition = random.choice(_CONDITIONS)
    humidity = random.randint(30, 90)
    return f"Weather in {location}: {temperature}°C, {condition}, Humidity: {humidity}%"


@weather_tools.tool()
def get_weather_forecast(location: str, days: int = 5) -> str:
    """Gets a weather forecast for the next 1-10 days for a location."""
    days = int(days)
    if days < 1 or days > 10:
        return "Error: Forecast days must be between 1 and 10"

    forecast = [f"Weather forecast for {location} ({days} days):"]
    for i in range(1, days + 1):
        forecast.append(f"  Day {i}: {random.randint(-10, 35)}°C, {random.choice(_CONDITIONS)}")
    return "\n".join(forecast)


@weather_tools.tool()
def get_clothing_recommendation(temperature: int, condition: str = "Sunny") -> str:
    """Provides clothing recommendations for a temperature in Celsius and a weather condition."""
    temperature = int(temperature)
    if temperature < 0:
        items: List[str] = ["Heavy winter coat", "Warm gloves and hat", "Insulated boots"]
    elif temperature < 10:
        items = ["Jacket or sweater", "Long pants", "Closed-toe shoes"]
    elif temperature < 20:
        items = ["Light jacket or cardigan", "Comfortable casual wear"]
    else:
        items = ["Light clothing", "T-shirt and shorts", "Sandals or light shoes"]

    lowered = condition.lower()
    if "rain" in lowered:
        items.extend(["Umbrella", "Waterproof jacket"])
    elif "snow" in lowered:
        items.append("Waterproof boots")
    elif "sun" in lowered and temperature >= 20:
        items.extend(["Sunglasses", "Sunscreen"])

    return f"Recommended for {temperature}°C and {condition}: " + ", ".join(items)
