from setuptools import setup, find_packages

setup(
    name="xibo-portal",
    version="0.1.0",
    description="Layout preview and editing portal for the Xibo signage CMS",
    author="Matt Skillman",
    packages=find_packages(include=["xibo_portal", "xibo_portal.*"]),
    python_requires=">=3.10",
    install_requires=[
        "Flask>=3.0",
        "Flask-JWT-Extended>=4.6",
        "PyYAML>=6.0",
        "requests>=2.31.0",
        "urllib3>=2.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "black>=23.0.0",
            "pylint>=2.17.0",
        ]
    },
)
