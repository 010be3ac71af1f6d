from setuptools import setup, find_packages
import os

here = os.path.dirname(os.path.abspath(__file__))

# Read requirements.txt
requirements_file = os.path.join(here, 'requirements.txt')
install_requires = []
if os.path.exists(requirements_file):
    with open(requirements_file, 'r') as f:
        install_requires = [line.strip() for line in f if line.strip() and not line.startswith('#')]

readme = os.path.join(here, 'README.md')

setup(
    name="solana_volume_bot_bundle",
    version="0.1.0",
    packages=find_packages(include=['solana_volume_bot_bundle', 'solana_volume_bot_bundle.*']),
    install_requires=install_requires,
    extras_require={
        'test': ['pytest>=7.4', 'pytest-asyncio>=0.23'],
    },
    author="Effie Choupette",
    author_email="effie_choupette@outlook.com",
    description="Multi-wallet Solana volume bot orchestrator",
    long_description=open(readme).read() if os.path.exists(readme) else '',
    long_description_content_type="text/markdown",
    python_requires=">=3.10",
    entry_points={
        'console_scripts': [
            'solo-volume-bot=solana_volume_bot_bundle.volume_bot.__main__:main',
        ],
    },
    include_package_data=True,
)
