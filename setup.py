from setuptools import setup, find_packages

setup(
    name="agriecho",
    version="1.0.0",
    description="Offline-first sync, caching and alert delivery for the AgriEcho farmer assistant",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.10",
    install_requires=[
        "PyYAML>=6.0",
        "requests>=2.31.0",
        "urllib3>=2.0",
        "APScheduler>=3.10,<4",
        "Flask>=3.0",
        "Flask-SQLAlchemy>=3.1",
        "SQLAlchemy>=2.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "black>=23.0.0",
            "pylint>=2.17.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "agriecho=agriecho.__main__:main",
        ]
    },
)
