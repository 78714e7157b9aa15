from setuptools import setup, find_packages


setup(
    name="usersk7",
    version="1.1.0",
    packages=find_packages(include=["usersk7", "usersk7.*"]),
    description="Export and import account records as encrypted, compressed .k7 archives.",
    author="vercingetorx",
    python_requires=">=3.9",
    install_requires=[
        "pycryptodomex>=3.23.0",
        "argon2-cffi>=23.1.0",
    ],
    extras_require={
        "test": ["pytest>=7"],
    },
    entry_points={
        "console_scripts": [
            "usersk7=usersk7.cli:main",
        ]
    },
)
