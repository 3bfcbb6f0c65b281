from setuptools import setup, find_packages

setup(
    name="selfassess-core",
    version="1.0.0",
    packages=find_packages(exclude=["selfassess.tests"]),
    package_data={
        "selfassess": [
            "assessments/definitions/*.yaml",
            "i18n/locales/*.yaml",
        ],
    },
    install_requires=[
        "pydantic>=2.0.0,<3.0.0",
        "PyYAML>=6.0",
        "redis>=5.0.1",
        "python-dotenv>=0.19.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    python_requires=">=3.9",
)
