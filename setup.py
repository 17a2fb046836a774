#!/usr/bin/env python

from setuptools import setup

setup(
    name="blobtree",
    version="0.1.0",
    description="File and folder API on top of a flat object store",
    packages=["blobtree", "blobtree.api", "blobtree.objectstorage"],
    include_package_data=True,
    zip_safe=False,
    keywords=["API", "object storage", "files"],
    classifiers=[
        "Intended Audience :: Developers",
        "Framework :: FastAPI",
        "Topic :: System :: Archiving",
    ],
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "python-multipart",
        "python-dotenv",
        "authlib",
        "httpx",
        "async-lru",
        "aiobotocore",
        "types-aiobotocore-s3",
        "class-doc",
        "typing_extensions",
        "pydantic>=2",
        "pydantic-settings",
        "uvicorn",
    ],
    extras_require={
        "dev": [
            "pytest",
            "anyio",
            "pytest-httpx",
            "mypy",
            "flake8",
        ]
    },
    entry_points={"console_scripts": ["blobtree = blobtree.__main__:main"]},
)
