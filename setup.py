from setuptools import setup, find_packages

setup(
    name="smartfactor",
    version="0.1.0",
    description="Structure-from-motion smart factors: landmark elimination by Schur complement",
    packages=find_packages("src"),
    package_dir={"": "src"},
    python_requires=">=3.8",
    install_requires=[
        "numpy",
        "scipy",
        "attrs",
        "PyYAML",
    ],
    extras_require={
        "test": ["pytest"],
        "gtsam": ["gtsam"],
    },
)
