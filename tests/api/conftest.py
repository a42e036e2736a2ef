import pytest
import random
import string

def get_random_string(length):
    return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

def get_random_username():
    return f"user_{get_random_string(8)}"

@pytest.fixture
def api_client(test_client):
    return test_client

@pytest.fixture
def auth_token(api_client):
    payload = {
        "username": get_random_username(),
        "password": "password123",
        "email": "someone@example.com"
    }
    response = api_client.post("/api/auth/register", json=payload)
    assert response.status_code == 201
    return response.json()["token"]

@pytest.fixture
def auth_headers(auth_token):
    return {"Authorization": f"Bearer {auth_token}"}
