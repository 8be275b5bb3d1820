import logging

import pytest

from cladescope.parser import parse_newick
from cladescope.session import Session

# 5 leaves, leaf branch lengths 1, 1, 2, 2, 3
FIVE_LEAF_NEWICK = "((Alphabeta:1,Betagamma:1)AB:1,(Cdelta:2,(Depsilon:2,Ezeta:3)DE:1)CDE:1);"


def pytest_configure(config):
    """Set up test environment before tests run."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def handle(store, name):
    """Handle of the single node called ``name``."""
    found = store.find_by_name(name)
    assert len(found) == 1, f"expected exactly one node named {name!r}, got {found}"
    return found[0]


@pytest.fixture
def by_name():
    return handle


@pytest.fixture
def five_leaf_store():
    return parse_newick(FIVE_LEAF_NEWICK)


@pytest.fixture
def five_leaf_session(five_leaf_store):
    return Session(five_leaf_store)


@pytest.fixture
def habitat_store():
    return parse_newick(
        "((A[habitat=sea,size=1],B[habitat=land,size=2])X,"
        "(C[habitat=air,size=6],D[habitat=sea,size=3])Y);"
    )
