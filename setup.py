"""
schemalens - Setup Configuration
"""
from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [
        line.strip()
        for line in fh.readlines()
        if line.strip() and not line.startswith("#")
    ]

# Optional engine drivers
postgresql_requirements = ["psycopg2-binary>=2.9.0"]
mysql_requirements = ["mysql-connector-python>=8.0.0"]
mssql_requirements = ["pyodbc>=5.0.0"]
bigquery_requirements = ["google-cloud-bigquery>=3.11.0"]
databricks_requirements = ["databricks-sql-connector>=3.0.0"]
db2_requirements = ["ibm_db>=3.2.0"]

all_database_requirements = (
    postgresql_requirements
    + mysql_requirements
    + mssql_requirements
    + bigquery_requirements
    + databricks_requirements
    + db2_requirements
)

# Development requirements
dev_requirements = [
    "pytest>=7.0.0",
    "pytest-cov>=4.0.0",
    "black>=23.0.0",
    "isort>=5.12.0",
    "flake8>=6.0.0",
    "mypy>=1.0.0",
]

setup(
    name="schemalens",
    version="1.0.0",
    author="schemalens Contributors",
    author_email="",
    description="AI-assisted schema intelligence: table, column and relationship descriptions for SQL engines",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Database",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
    ],
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "postgresql": postgresql_requirements,
        "mysql": mysql_requirements,
        "mssql": mssql_requirements,
        "bigquery": bigquery_requirements,
        "databricks": databricks_requirements,
        "db2": db2_requirements,
        "all-databases": all_database_requirements,
        "dev": dev_requirements,
        "all": all_database_requirements + dev_requirements,
    },
    entry_points={
        "console_scripts": [
            "schemalens=schemalens.cli:main",
        ],
    },
    keywords=[
        "schema",
        "metadata",
        "data-catalog",
        "database",
        "bedrock",
        "claude",
    ],
)
