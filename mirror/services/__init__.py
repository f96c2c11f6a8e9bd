"""Domain services: manifest store, sync engine, byte ranges, datetimes."""
