from setuptools import find_packages, setup

setup(
    name="tenantmeter",
    version="0.1.0",
    packages=find_packages(include=["tenantmeter", "tenantmeter.*", "metrics_prometheus"]),
    package_data={"tenantmeter": ["config.yaml"]},
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2",
        "redis>=4.5",
        "prometheus-client",
        "PyYAML",
        "kubernetes",
    ],
    extras_require={
        "test": ["pytest", "fakeredis", "hypothesis"],
    },
)
