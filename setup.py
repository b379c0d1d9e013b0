from setuptools import setup, find_packages

setup(
    name="ftsbench",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "Whoosh==2.7.4",
        "click==8.1.7",
        "SQLAlchemy==2.0.36",
        "PyMySQL==1.1.1",
        "tenacity==9.0.0",
    ],
    extras_require={
        "test": [
            "pytest==8.3.3",
        ],
    },
    entry_points={
        'console_scripts': [
            'ftsbench=ftsbench.cli:main',
        ],
    },
    python_requires=">=3.9",
)
