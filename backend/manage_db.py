#!/usr/bin/env python3
"""
Database management utility for the metro fare system.

Usage:
    python manage_db.py init       - Initialize database with the demo network
    python manage_db.py show       - Show stations and track segments
    python manage_db.py add_edge   - Add or update a track segment
    python manage_db.py add_rider  - Create a rider with wallet and card
    python manage_db.py reset      - Reset to the demo network
"""

import sys
import os
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from metrofare.config import settings
from metrofare.database import Base, DatabaseManager
from metrofare.exceptions import PersistenceFailure
from metrofare.services import StationGraph


def init_database():
    """Initialize database with the demo station network."""
    print("Initializing database...")
    db = DatabaseManager()
    db.init_default_network()
    print("Database initialized successfully!")
    show_network()


def show_network():
    """Display all stations and edges."""
    db = DatabaseManager()
    graph = StationGraph(db.load_stations(), db.load_station_edges())

    print("\n" + "="*50)
    print("STATION NETWORK")
    print("="*50)
    print(f"{'Code':<6} {'Name':<22} {'Neighbors'}")
    print("-"*50)

    for station in graph.stations():
        neighbors = ", ".join(f"{code}:{km}km" for code, km in sorted(station.neighbors.items()))
        print(f"{station.code:<6} {station.name:<22} {neighbors}")

    print("-"*50)
    print(f"Total stations: {len(graph.stations())}")
    print(f"Route algorithm: {settings.ROUTE_ALGORITHM}")
    print("="*50)


def add_edge():
    """Interactive edge update."""
    print("\nADD OR UPDATE TRACK SEGMENT")
    print("-"*30)

    try:
        db = DatabaseManager()
        codes = [s.code for s in db.load_stations()]

        print(f"Available stations: {codes}")

        station_a = input("Enter first station code: ").strip().lower()
        station_b = input("Enter second station code: ").strip().lower()

        if station_a not in codes or station_b not in codes or station_a == station_b:
            print(f"Invalid station codes! Must be two different codes from: {codes}")
            return

        distance = int(input("Enter distance (km): "))

        if distance <= 0:
            print("Distance must be positive!")
            return

        db.save_station_edge(station_a, station_b, distance)
        print(f"✓ Saved {station_a} <-> {station_b} = {distance} km")

    except ValueError:
        print("Invalid input! Please enter numbers only.")
    except PersistenceFailure as e:
        print(f"Error saving edge: {e}")


def add_rider():
    """Create a rider interactively."""
    print("\nADD RIDER")
    print("-"*30)

    try:
        db = DatabaseManager()
        username = input("Username: ").strip().lower()
        wallet = float(input("Opening wallet balance: "))
        card = float(input("Opening card balance: "))

        if wallet < 0 or card < 0:
            print("Balances cannot be negative!")
            return

        account = db.create_rider(username, wallet=wallet, card_balance=card)
        print(f"✓ Rider {account.username} created with card #{account.card.card_id}")

    except ValueError:
        print("Invalid input! Please enter numbers only.")
    except PersistenceFailure as e:
        print(f"Error creating rider: {e}")


def reset_database():
    """Reset database to the demo network."""
    confirm = input("Are you sure you want to delete all data and restore the demo network? (yes/no): ")

    if confirm.lower() == 'yes':
        db = DatabaseManager()
        Base.metadata.drop_all(bind=db.engine)
        db.dispose()
        print(f"Dropped all tables in {db.database_url}")

        init_database()
        print("Database reset to defaults!")
    else:
        print("Reset cancelled.")


def main():
    """Main entry point."""
    if len(sys.argv) < 2:
        print(__doc__)
        return

    command = sys.argv[1].lower()

    commands = {
        'init': init_database,
        'show': show_network,
        'add_edge': add_edge,
        'add_rider': add_rider,
        'reset': reset_database
    }

    if command in commands:
        commands[command]()
    else:
        print(f"Unknown command: {command}")
        print(__doc__)


if __name__ == "__main__":
    main()
