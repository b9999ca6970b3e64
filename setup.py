import setuptools
from pathlib import Path

# --- Read README for Long Description ---
def _read_readme(filename="README.md"):
    """Reads the README file for the long description."""
    readme_path = Path(__file__).parent / filename
    try:
        with open(readme_path, encoding="utf-8") as f:
            return f.read()
    except FileNotFoundError:
        print(f"Warning: {filename} not found. Long description will be empty.")
        return ""


setuptools.setup(
    name="gemini-messenger",
    version="1.2.0",
    author="thiswillbeyourgithub",
    description="Terminal Gemini chat with model failover, tool calls, grounding citations and spoken answers.",
    long_description=_read_readme(),
    long_description_content_type="text/markdown",
    license="GPLv3",
    packages=setuptools.find_packages(
        exclude=["*.tests", "*.tests.*", "tests.*", "tests"]
    ),

    install_requires=[
        "click>=8.0",
        "python-dotenv>=1.1.0",
        "numpy>=2.2.5",
        "loguru>=0.7.3",
        "platformdirs>=4.3.7",
        "pydantic>=2.7",
        "requests>=2.31",
        "httpx>=0.27",
        "beautifulsoup4>=4.12",
        "tzdata",
        "sounddevice>=0.4.6",
        "google-genai >= 1.14.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },

    entry_points={
        "console_scripts": [
            "gemini-messenger=gemini_messenger.gemini_messenger:main",
        ],
    },

    python_requires=">=3.9",

    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: OS Independent",
        "Topic :: Communications :: Chat",
        "Topic :: Multimedia :: Sound/Audio :: Speech",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
    ],

    keywords="gemini, chat, llm, tts, failover, tool calling, grounding",
)
