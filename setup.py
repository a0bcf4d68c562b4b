from setuptools import setup, find_packages

setup(
    name="studyhub",
    version="1.0.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "fastapi>=0.110.0",
        "uvicorn[standard]>=0.24.0",
        "sqlalchemy>=2.0.23",
        "pydantic>=2.5.3",
        "pydantic-settings>=2.1.0",
        "python-dotenv>=1.0.0",
        "PyJWT>=2.8.0",
        "bcrypt>=4.0.1",
        "pytz>=2023.3",
        "openai>=1.6.0",
        "httpx>=0.25.0",
    ],
    extras_require={
        "postgres": ["psycopg[binary]>=3.1.12"],
        "test": ["pytest>=7.4.0", "pytest-asyncio>=0.23.0"],
    },
    entry_points={"console_scripts": ["studyhub=studyhub.start:main"]},
    python_requires=">=3.10",
)
