[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mifaresam"
version = "0.1.0"
description = "APDU builders and host-side protocol logic for NXP MIFARE SAM AV2/AV3 secure access modules"
requires-python = ">=3.10"
dependencies = [
    "pycryptodome",
]
keywords = [
    "smartcard",
    "mifare",
    "sam",
    "apdu",
    "iso7816",
    "pcsc",
    "nxp",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security :: Cryptography",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["mifaresam"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
