#!/usr/bin/env python3

import sys
from datetime import timedelta

from sqlalchemy.orm import sessionmaker
from src.database import Base, engine
from src.models import Port, User
from src.auth.utils import create_access_token

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

PORTS = [
    {"code": "PAP-S", "name": "Port international de Port-au-Prince", "type": "sea", "location": "Port-au-Prince, Ouest"},
    {"code": "PAP-A", "name": "Aéroport international Toussaint Louverture", "type": "air", "location": "Port-au-Prince, Ouest"},
    {"code": "CAP-S", "name": "Port de Cap-Haïtien", "type": "sea", "location": "Cap-Haïtien, Nord"},
    {"code": "CAP-A", "name": "Aéroport international Cap-Haïtien", "type": "air", "location": "Cap-Haïtien, Nord"},
    {"code": "MAL-L", "name": "Poste frontalier de Malpasse", "type": "land", "location": "Malpasse, Ouest"},
]

USERS = [
    {"name": "Admin", "email": "admin@border.example", "role": "admin", "port": None},
    {"name": "Supervisor PAP", "email": "supervisor.pap@border.example", "role": "supervisor", "port": "PAP-A"},
    {"name": "Agent PAP Air", "email": "agent.pap.air@border.example", "role": "agent", "port": "PAP-A"},
    {"name": "Agent PAP Sea", "email": "agent.pap.sea@border.example", "role": "agent", "port": "PAP-S"},
    {"name": "Agent CAP Air", "email": "agent.cap.air@border.example", "role": "agent", "port": "CAP-A"},
]

def create_seed_data():
    db = SessionLocal()

    try:
        print("Creating seed data for the border control ticketing system...")
        Base.metadata.create_all(bind=engine)

        # 1. Ports
        print("Creating ports...")
        ports = {}
        for data in PORTS:
            port = db.query(Port).filter(Port.code == data["code"]).first()
            if port is None:
                port = Port(status="active", **data)
                db.add(port)
            ports[data["code"]] = port
        db.flush()

        # 2. Users
        print("Creating users...")
        users = []
        for data in USERS:
            user = db.query(User).filter(User.email == data["email"]).first()
            if user is None:
                port = ports.get(data["port"]) if data["port"] else None
                user = User(
                    name=data["name"],
                    email=data["email"],
                    role=data["role"],
                    status="active",
                    port_id=port.id if port else None
                )
                db.add(user)
            users.append(user)

        db.commit()
        print("Successfully created seed data!")
        print(f"  - {len(ports)} ports")
        print(f"  - {len(users)} users")
        print()
        print("Development bearer tokens (valid 12 hours):")
        for user in users:
            token = create_access_token({"sub": str(user.id)}, expires_delta=timedelta(hours=12))
            print(f"  - {user.email} ({user.role}): {token}")

        return True

    except Exception as e:
        print(f"Error creating seed data: {e}")
        db.rollback()
        raise
    finally:
        db.close()

if __name__ == "__main__":
    success = create_seed_data()
    sys.exit(0 if success else 1)
