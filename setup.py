from setuptools import setup, find_namespace_packages

setup(
    name="citysim",
    version="0.1.0",
    description="Optimize and compare smart city simulation runs",
    packages=find_namespace_packages(include=["citysim", "citysim.*"]),
    python_requires=">=3.11",
    install_requires=[
        "anthropic>=0.50.0",
        "pymupdf>=1.24.0",
        "pydantic>=2.0",
        "numpy>=1.26.0",
        "streamlit>=1.35.0",
        "plotly>=5.20.0",
    ],
    extras_require={
        "dev": ["pytest>=8.0.0"],
    },
    entry_points={
        "console_scripts": ["citysim=citysim.core.orchestrator:main"],
    },
)
