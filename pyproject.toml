[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "imagor"
version = "1.4.5"
description = "Core building blocks of an image processing server: blobs with type sniffing, fan-out readers, request contexts, errors, suppression and response helpers"
requires-python = ">=3.10"
dependencies = []
keywords = ["image", "blob", "mime-sniffing", "http", "cache", "fanout"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Graphics",
    "Topic :: Internet :: WWW/HTTP",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["imagor"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
