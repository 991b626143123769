"""
Firestore query helpers.

NOTE: For firebase_admin SDK, we use positional arguments which still work.
The deprecation warning is just a warning - the functionality is still supported.
"""


def where_filter(query, field_path: str, op_string: str, value):
    """
    Helper function for Firestore queries.

    Usage:
        query = where_filter(collection, "category", "==", "pothole")
        query = where_filter(query, "status", "in", ["pending", "in-progress"])
    """
    return query.where(field_path, op_string, value)
