"""reqgraph.integrations — HTTP client modules.

Outbound calls to a reqgraph server go through a client in this package,
never via bare `requests` calls in services or UI adapters.

Current clients:
  relationship_client.RelationshipApiClient — relationships REST API
"""
