import asyncio
import sys

from weathergate.client import Client, ClientConfig


async def main(city: str) -> None:
    config = ClientConfig(url="http://localhost:3000")

    async with Client(config) as client:
        print(f"Session {client.session_id}")

        locations = await client.search_location(city)
        if not locations:
            print(f"No match for {city!r}")
            return

        for location in locations:
            print(f"  {location['name']}, {location['country']} ({location['lat']}, {location['lon']})")

        best = locations[0]
        forecast = await client.get_complete_forecast(best["lat"], best["lon"])

        current = forecast["current"]
        print(f"\nNow in {best['name']}: {current['temperature']}°C, {current['weather']}")
        for hour in forecast["next_12_hours"]:
            print(f"  {hour['time']}  {hour['temperature']:>5}°C  {hour['weather']}")
        for day in forecast["next_7_days"]:
            print(f"  {day['date']}  {day['temperature_min']}-{day['temperature_max']}°C  {day['weather']}")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "Paris"))
