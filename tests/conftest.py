"""Test configuration for sql_heuristics."""

from __future__ import annotations

from pathlib import Path
import sys

import pytest

repo_root = Path(__file__).resolve().parents[1]
src_path = repo_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

import duckdb  # noqa: E402

from sql_heuristics import Catalog  # noqa: E402


TPCH_DDL = """
CREATE TABLE region (
    r_regionkey INTEGER PRIMARY KEY,
    r_name CHAR(25) NOT NULL,
    r_comment VARCHAR(152)
);
CREATE TABLE nation (
    n_nationkey INTEGER PRIMARY KEY,
    n_name CHAR(25) NOT NULL,
    n_regionkey INTEGER NOT NULL,
    n_comment VARCHAR(152)
);
CREATE TABLE customer (
    c_custkey INTEGER PRIMARY KEY,
    c_name VARCHAR(25) NOT NULL,
    c_address VARCHAR(40),
    c_nationkey INTEGER NOT NULL,
    c_phone CHAR(15),
    c_acctbal DECIMAL(15, 2)
);
CREATE TABLE orders (
    o_orderkey INTEGER PRIMARY KEY,
    o_custkey INTEGER NOT NULL,
    o_orderstatus CHAR(1),
    o_totalprice DECIMAL(15, 2) NOT NULL,
    o_orderdate DATE NOT NULL,
    o_comment VARCHAR(79)
);
CREATE TABLE part (
    p_partkey INTEGER PRIMARY KEY,
    p_name VARCHAR(55),
    p_size INTEGER NOT NULL,
    p_retailprice DECIMAL(15, 2)
);
CREATE TABLE supplier (
    s_suppkey INTEGER PRIMARY KEY,
    s_name CHAR(25),
    s_nationkey INTEGER NOT NULL,
    s_acctbal DECIMAL(15, 2)
);
CREATE TABLE partsupp (
    ps_partkey INTEGER NOT NULL,
    ps_suppkey INTEGER NOT NULL,
    ps_availqty INTEGER,
    ps_supplycost DECIMAL(15, 2) NOT NULL,
    PRIMARY KEY (ps_partkey, ps_suppkey)
);
"""

TPCH_ROWS = """
INSERT INTO region VALUES (0, 'AFRICA', NULL), (1, 'AMERICA', NULL), (2, 'EUROPE', 'old world');
INSERT INTO nation VALUES
    (0, 'ALGERIA', 0, NULL), (1, 'BRAZIL', 1, NULL), (2, 'CANADA', 1, NULL),
    (3, 'FRANCE', 2, NULL), (4, 'GERMANY', 2, NULL);
INSERT INTO customer VALUES
    (1, 'Customer#1', 'IVhzIApeRb', 1, '25-989-741-2988', 711.56),
    (2, 'Customer#2', 'XSTf4,NCwDVaW', 3, '23-768-687-3665', 121.65),
    (3, 'Customer#3', 'MG9kdTD2WBHm', 4, '11-719-748-3364', 7498.12),
    (4, 'Customer#4', NULL, 4, NULL, 2866.83),
    (5, 'Customer#5', 'KvpyuHCplrB84', 0, '13-750-942-6364', -794.22);
INSERT INTO orders VALUES
    (10, 1, 'O', 173665.47, DATE '1996-01-02', 'nstructions sleep'),
    (11, 1, 'F', 46929.18, DATE '1995-03-15', NULL),
    (12, 2, 'O', 193846.25, DATE '1995-03-15', 'fluffily'),
    (13, 3, 'F', 32151.78, DATE '1993-10-14', NULL),
    (14, 4, 'P', 144659.20, DATE '1995-03-15', 'blithely'),
    (15, 4, 'O', 58749.59, DATE '1998-07-21', NULL);
INSERT INTO part VALUES
    (1, 'goldenrod lavender', 7, 901.00), (2, 'blush thistle', 1, 902.00),
    (3, 'spring green', 21, 903.00), (4, 'cornflower chocolate', 14, 904.00),
    (5, 'forest brown', 15, NULL);
INSERT INTO supplier VALUES
    (1, 'Supplier#1', 3, 5755.94), (2, 'Supplier#2', 4, 4032.68), (3, 'Supplier#3', 1, 4192.40);
INSERT INTO partsupp VALUES
    (1, 1, 3325, 771.64), (1, 2, 8076, 993.49), (1, 3, 3956, 337.09),
    (2, 1, 4069, 337.09), (2, 3, 8895, 378.49),
    (3, 2, 4651, 920.92), (3, 3, 4093, 920.92),
    (4, 1, 3072, 498.13);
"""


@pytest.fixture
def tpch_catalog() -> Catalog:
    """Catalog with TPC-H style keys and declared types."""
    return Catalog.from_ddl(TPCH_DDL)


@pytest.fixture
def tpch_conn():
    """In-memory DuckDB database with a tiny TPC-H style dataset."""
    conn = duckdb.connect(":memory:")
    conn.execute(TPCH_DDL)
    conn.execute(TPCH_ROWS)
    yield conn
    conn.close()
