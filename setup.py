from setuptools import find_packages, setup

setup(
    name="esftheta",
    version="0.1.0",
    description="Estimation of the scaled mutation rate under the Ewens sampling formula, and Monte-Carlo "
    "calibration of competing estimators",
    python_requires=">=3.8",
    install_requires=[
        "numpy>=1.17.0",
        "scipy>=1.5.0",
        "mpmath>=1.1",
        "tskit>=0.4.0",
        "msprime>=1.0",
        "sh>=1.14",
    ],
    extras_require={"test": ["pytest"]},
    packages=find_packages(exclude=["test", "test.*"]),
    entry_points={"console_scripts": ["esftheta=esftheta.__main__:main"]},
)
