# energy_ledger/demo/seed_demo_data.py

from energy_ledger.config.loader import DEFAULT_TARIFF_PATH, load_tariff_config
from energy_ledger.storage.db import DEFAULT_DB_PATH
from energy_ledger.storage.models import Home
from energy_ledger.storage.repository import EnergyRepository, initialize_schema

# Rated wattages from the appliance library
DEMO_ROOMS = {
    "Living Room": [("Normal Fan", 75), ("LED TV 43 inch", 80), ("LED Bulb", 9)],
    "Bedroom": [("1.5 Ton 5 Star AC", 1500), ("BLDC Fan", 35)],
    "Kitchen": [("Refrigerator Double Door", 250), ("Induction Cooktop", 1500)],
    "Bathroom": [("Geyser 15L", 2000)],
}


def seed_demo(db_path: str = DEFAULT_DB_PATH) -> Home:
    """Create the schema, load the default slabs and add a demo home."""
    initialize_schema(db_path)
    repository = EnergyRepository(db_path)
    repository.replace_slabs(load_tariff_config(str(DEFAULT_TARIFF_PATH)).slabs)

    home = repository.add_home("Demo Home")
    for room_name, appliances in DEMO_ROOMS.items():
        room = repository.add_room(home.id, room_name)
        for name, wattage in appliances:
            repository.add_device(room.id, name, wattage)
    return home


if __name__ == "__main__":
    demo_home = seed_demo()
    print(f"Demo home created with id {demo_home.id}")
