from datetime import time
from sqlalchemy.orm import Session
from inkframe.db import SessionLocal, Base, engine
from inkframe.models.device import Device, new_device
from inkframe.models.device_model import DeviceModel
from inkframe.models.playlist import Playlist, PlaylistItem
from inkframe.models.plugin import new_plugin
from inkframe.services.geometry import DEFAULT_DEVICE_MODELS

WELCOME_MARKUP = """<div class="layout layout--col layout--center">
  <span class="value value--xlarge">{{ greeting | default: "Hello" }}</span>
  <span class="label">{{ trmnl.plugin_settings.instance_name }} &middot; {{ size }}</span>
</div>"""

QUOTE_MARKUP = """<div class="layout layout--col layout--center">
  <p class="title">{{ data.quote or "No quote yet" }}</p>
  <p class="description">{{ data.author }}</p>
</div>"""

WEATHER_MARKUP = """<div class="layout layout--col">
  {% if error %}<span class="title">{{ error }}</span>{% else %}
  <span class="value">{{ current_weather.temperature }}&deg;</span>
  <span class="label">{{ config.city }}</span>{% endif %}
</div>"""


def seed_device_models(db: Session) -> int:
    existing = {row[0] for row in db.query(DeviceModel.name).all()}
    added = 0
    for entry in DEFAULT_DEVICE_MODELS:
        if entry["name"] in existing:
            continue
        db.add(DeviceModel(**entry))
        added += 1
    if added:
        db.commit()
    return added


def seed() -> None:
    Base.metadata.create_all(bind=engine)
    db: Session = SessionLocal()
    try:
        seed_device_models(db)
        if db.query(Device).filter(Device.mac_address == "AA:BB:CC:DD:EE:01").first():
            return

        device = new_device("AA:BB:CC:DD:EE:01", name="Kitchen", api_key="demo-access-token")
        device.timezone = "Europe/Berlin"
        db.add(device)

        welcome = new_plugin("Welcome", render_markup=WELCOME_MARKUP, data_payload={"greeting": "Good morning"})
        quote = new_plugin(
            "Quote",
            data_strategy="push",
            render_markup=QUOTE_MARKUP,
            markup_language="jinja",
        )
        weather = new_plugin(
            "Weather",
            data_strategy="pull",
            data_stale_minutes=30,
            polling_url=(
                "https://api.open-meteo.com/v1/forecast?latitude={{ latitude }}"
                "&longitude={{ longitude }}&current_weather=true"
            ),
            configuration={"city": "Berlin", "latitude": "52.52", "longitude": "13.41"},
            render_markup=WEATHER_MARKUP,
        )
        db.add_all([welcome, quote, weather])
        db.commit()

        morning = Playlist(
            device_id=device.id,
            name="Weekday mornings",
            weekdays=[1, 2, 3, 4, 5],
            active_from=time(6, 0),
            active_until=time(9, 0),
            refresh_time=600,
        )
        always = Playlist(device_id=device.id, name="All day")
        db.add_all([morning, always])
        db.commit()

        db.add_all(
            [
                PlaylistItem(playlist_id=morning.id, plugin_id=weather.id, order=1),
                PlaylistItem(
                    playlist_id=morning.id,
                    mashup={"layout": "1Lx1R", "plugin_ids": [welcome.id, quote.id], "name": "Morning mashup"},
                    order=2,
                ),
                PlaylistItem(playlist_id=always.id, plugin_id=welcome.id, order=1),
                PlaylistItem(playlist_id=always.id, plugin_id=quote.id, order=2),
            ]
        )
        db.commit()
    finally:
        db.close()


if __name__ == "__main__":
    seed()
