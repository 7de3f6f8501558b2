import setuptools

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setuptools.setup(
    author="Diem Core Contributors",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
    ],
    description="A Python client for the Diem JSON-RPC API",
    extras_require={"test": ["pytest"]},
    include_package_data=True,
    install_requires=["httpx", "pynacl", "tenacity", "typing_extensions"],
    long_description=long_description,
    long_description_content_type="text/markdown",
    name="diem_sdk",
    packages=["diem_sdk"],
    python_requires=">=3.8",
    version="0.1.0",
)
