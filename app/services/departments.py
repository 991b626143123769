"""
Static routing table from issue category to the department that owns it.
"""

from typing import Union

from app.models.issue import Category

PUBLIC_WORKS = "Public Works"
SANITATION = "Sanitation"
WATER_WORKS = "Water Works"
PARKS_AND_RECREATION = "Parks & Recreation"
TRAFFIC_MANAGEMENT = "Traffic Management"
GENERAL_SERVICES = "General Services"

CATEGORY_DEPARTMENTS = {
    Category.POTHOLE: PUBLIC_WORKS,
    Category.STREETLIGHT: PUBLIC_WORKS,
    Category.DRAINAGE: PUBLIC_WORKS,
    Category.TRASH: SANITATION,
    Category.WATER: WATER_WORKS,
    Category.GRAFFITI: PARKS_AND_RECREATION,
    Category.TRAFFIC: TRAFFIC_MANAGEMENT,
    Category.OTHER: GENERAL_SERVICES,
}

DEPARTMENTS = frozenset(CATEGORY_DEPARTMENTS.values())


def department_for_category(category: Union[Category, str]) -> str:
    """Department for a category; anything unmapped falls back to General Services."""
    try:
        return CATEGORY_DEPARTMENTS[Category(category)]
    except ValueError:
        return GENERAL_SERVICES
