"""
Requirement Relationship Graph
Blueprint registry.

    health_bp         /api/v1/health
    relationship_bp   /api/v1/requirements/relationships
"""
