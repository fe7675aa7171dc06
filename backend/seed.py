import os

from sqlmodel import select

from database import create_db, tenant_session, unit_of_work
from models import BedType, Department
from services.beds import create_bed
from services.departments import create_department
from tenancy import known_namespaces

DEMO_DEPARTMENTS = [
    {
        "department_code": "ICU",
        "name": "Intensive Care Unit",
        "description": "Critical care beds with continuous monitoring",
        "floor_number": 3,
        "building": "Main",
        "total_bed_capacity": 4,
    },
    {
        "department_code": "GEN",
        "name": "General Medicine",
        "description": "Adult medical ward",
        "floor_number": 2,
        "building": "Main",
        "total_bed_capacity": 6,
    },
    {
        "department_code": "PED",
        "name": "Pediatrics",
        "description": "Children's ward",
        "floor_number": 1,
        "building": "East",
        "total_bed_capacity": 3,
    },
]

DEMO_BEDS = {
    "ICU": [
        {"bed_number": "ICU-101", "bed_type": BedType.ICU, "room_number": "301", "wing": "A", "features": ["ventilator", "cardiac_monitor"]},
        {"bed_number": "ICU-102", "bed_type": BedType.ICU, "room_number": "302", "wing": "A", "features": ["ventilator", "cardiac_monitor"]},
        {"bed_number": "ICU-103", "bed_type": BedType.ISOLATION, "room_number": "303", "wing": "B", "features": ["negative_pressure"]},
        {"bed_number": "ICU-104", "bed_type": BedType.ICU, "room_number": "304", "wing": "B", "features": ["cardiac_monitor"]},
    ],
    "GEN": [
        {"bed_number": "GEN-201", "room_number": "201", "wing": "A", "features": ["oxygen"]},
        {"bed_number": "GEN-202", "room_number": "201", "wing": "A", "features": ["oxygen"]},
        {"bed_number": "GEN-203", "room_number": "202", "wing": "A", "features": []},
        {"bed_number": "GEN-204", "room_number": "202", "wing": "A", "features": []},
        {"bed_number": "GEN-205", "room_number": "203", "wing": "B", "features": ["oxygen", "bariatric"]},
        {"bed_number": "GEN-206", "room_number": "203", "wing": "B", "features": []},
    ],
    "PED": [
        {"bed_number": "PED-101", "bed_type": BedType.PEDIATRIC, "room_number": "101", "wing": "East", "features": ["crib"]},
        {"bed_number": "PED-102", "bed_type": BedType.PEDIATRIC, "room_number": "101", "wing": "East", "features": []},
        {"bed_number": "PED-103", "bed_type": BedType.PEDIATRIC, "room_number": "102", "wing": "East", "features": ["oxygen"]},
    ],
}


def run_seed(seed_beds: bool = True):
    create_db()

    for namespace in known_namespaces():
        with tenant_session(namespace) as session:
            with unit_of_work(session, namespace, read_only=True):
                existing = session.exec(select(Department)).first()
            if existing:
                print(f"[{namespace.tenant_id}] Already seeded. Skipping.")
                continue

            for spec in DEMO_DEPARTMENTS:
                department = create_department(session, namespace, **spec)
                print(f"[{namespace.tenant_id}] Created department: {department.department_code} (id={department.id})")

                if not seed_beds:
                    continue
                department_id = department.id
                for bed_spec in DEMO_BEDS[spec["department_code"]]:
                    bed = create_bed(
                        session,
                        namespace,
                        department_id=department_id,
                        floor_number=spec["floor_number"],
                        **bed_spec,
                    )
                    print(f"  Created bed: {bed.bed_number} [{bed.bed_type.value}]")

    print("Seed complete.")


if __name__ == "__main__":
    run_seed(seed_beds=os.getenv("BEDWISE_SEED_BEDS", "1") == "1")
