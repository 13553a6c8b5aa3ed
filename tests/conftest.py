"""
Shared fixtures.
"""

import pytest

from factories import make_identity


@pytest.fixture
def local_identity():
    return make_identity("alice@example.org")
