from __future__ import annotations

from typing import Dict, List, Optional

from sqlmodel import Session, select

from constituency_desk.database import init_db, session_scope
from constituency_desk.models.user import User, UserRole
from constituency_desk.models.visitor import Visitor, VisitorCategory
from constituency_desk.security import create_access_token


# ---------------------------------------------------------------------
# Seed data (office staff + a handful of constituents for local dev)
# ---------------------------------------------------------------------

STAFF: List[Dict[str, str]] = [
    {"email": "admin@office.local", "name": "Office Admin", "role": "ADMIN"},
    {"email": "mla@office.local", "name": "Representative", "role": "POLITICIAN"},
    {"email": "desk@office.local", "name": "Front Desk", "role": "STAFF"},
    {"email": "observer@office.local", "name": "Observer", "role": "VIEWER"},
]

VISITORS: List[Dict[str, Optional[str | int]]] = [
    {"name": "Ramesh Patil", "phone": "9800000001", "village": "Khandala", "district": "Pune", "category": "FARMER", "age": 52},
    {"name": "Sneha Kulkarni", "phone": "9800000002", "village": "Wai", "district": "Satara", "category": "STUDENT", "age": 21},
    {"name": "Arjun Shinde", "phone": "9800000003", "village": "Wai", "district": "Satara", "category": "UNEMPLOYED", "age": 26},
]


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def upsert_user(session: Session, row: Dict[str, str]) -> User:
    """
    Upsert by email (stable identifier). Keeps id and created_at.
    """
    email = row["email"].strip().lower()
    existing = session.exec(select(User).where(User.email == email)).first()
    if existing:
        existing.name = row["name"]
        existing.role = UserRole(row["role"])
        existing.is_active = True
        session.add(existing)
        return existing

    user = User(email=email, name=row["name"], role=UserRole(row["role"]))
    session.add(user)
    return user


def ensure_visitor(session: Session, row: Dict[str, Optional[str | int]]) -> Visitor:
    existing = session.exec(select(Visitor).where(Visitor.phone == row["phone"])).first()
    if existing:
        return existing

    visitor = Visitor(
        name=str(row["name"]),
        phone=str(row["phone"]),
        village=str(row["village"]),
        district=str(row["district"]),
        category=VisitorCategory(str(row["category"])),
        age=row.get("age"),
    )
    session.add(visitor)
    return visitor


# ---------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------

def main() -> None:
    # Ensure tables exist (local dev)
    init_db()

    tokens: Dict[str, str] = {}
    with session_scope() as session:
        users = [upsert_user(session, row) for row in STAFF]
        for row in VISITORS:
            ensure_visitor(session, row)
        session.flush()

        for u in users:
            tokens[f"{u.role.value:<10} {u.email}"] = create_access_token(u.id, u.role, u.email)

        visitor_total = len(session.exec(select(Visitor)).all())

    print(f"Seeded/updated users: {len(STAFF)}; visitors on file: {visitor_total}")
    print("Bearer tokens (local dev only):")
    for label, token in tokens.items():
        print(f"  {label}  {token}")


if __name__ == "__main__":
    main()
