import os
import sys

import pytest

# Get the directory of the current conftest.py file
current_dir = os.path.dirname(os.path.abspath(__file__))

# Calculate the project root (adjust the number of ".." if needed)
project_root = os.path.abspath(os.path.join(current_dir, '../../'))

# Insert the project root at the beginning of sys.path
if project_root not in sys.path:
    sys.path.insert(0, project_root)


@pytest.fixture
def oidc_client_file(pytestconfig):
    client_file = pytestconfig.getoption("--oidc-client-file")
    if not client_file:
        pytest.skip("--oidc-client-file not given")
    return client_file


@pytest.fixture
def oidc_issuer(pytestconfig):
    return pytestconfig.getoption("--oidc-issuer")
