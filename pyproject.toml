[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slabpool"
version = "0.1.0"
description = "Size-class memory pool allocators (fixed slot pools, thread/central/page caches) over a simulated address space"
requires-python = ">=3.10"
dependencies = []
keywords = ["allocator", "memory pool", "slab", "size class", "thread cache", "page cache"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["slabpool"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
