from setuptools import setup, find_packages

setup(
    name="kube-template-utils",
    version="0.3.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=[
        "cryptography",
        "jinja2>=3.1",
        "pydantic>=2",
        "PyYAML",
    ],
    extras_require={
        "test": ["pytest"],
    },
)
