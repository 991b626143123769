"""
Manual smoke check against the in-memory store.

Walks one issue through report -> upvote -> resolve -> reopen and prints
each response. Run from the repo root: `python run_checks.py`.
"""

from fastapi.testclient import TestClient

from app.main import app
from app.services.store import InMemoryIssueStore, set_issue_store

set_issue_store(InMemoryIssueStore())
client = TestClient(app)

CITIZEN = {"X-Actor-Id": "smoke-citizen", "X-Actor-Role": "citizen"}
ADMIN = {"X-Actor-Id": "smoke-admin", "X-Actor-Role": "admin"}

print('ROOT:')
print(client.get('/').json())

print('\nHEALTH:')
print(client.get('/health').json())

print('\nDB HEALTH:')
resp = client.get('/health/db')
print(resp.status_code, resp.json())

print('\nREPORT:')
resp = client.post('/issues', headers=CITIZEN, json={
    "title": "Smoke test pothole",
    "description": "Created by run_checks.py",
    "category": "pothole",
    "priority": "high",
    "address": "Station Road",
    "latitude": 18.5204,
    "longitude": 73.8567,
})
print(resp.status_code, resp.json())
issue_id = resp.json()["issue"]["id"]

print('\nUPVOTE (twice, second should be 409):')
for _ in range(2):
    resp = client.post(f'/issues/{issue_id}/upvote', headers=ADMIN)
    print(resp.status_code, resp.json())

print('\nRESOLVE:')
resp = client.put(f'/issues/{issue_id}/status', headers=ADMIN, json={"status": "resolved"})
print(resp.status_code, resp.json()["status"])

print('\nREOPEN:')
resp = client.post(f'/issues/{issue_id}/reopen', headers=CITIZEN, json={"note": "Still there"})
print(resp.status_code, resp.json()["status"])

print('\nDASHBOARD:')
print(client.get('/dashboard/stats', headers=ADMIN).json())
