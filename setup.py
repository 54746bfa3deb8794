"""
Setup script for portalcrypt - end-to-end encryption for relayed portal messages.

This package provides:
- Deterministic pairing key derivation (PBKDF2-HMAC-SHA256, optional Argon2id)
- Per-message AES-256-GCM envelopes with type/timestamp bound as AAD
- A single versioned policy table of cleartext and encrypted message types
- Wire envelope sealing/opening for a message-oriented relay transport
"""

from setuptools import setup, find_packages
import os

this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='portalcrypt',
    version='1.0.0',
    description='End-to-end encryption for desktop/mobile portal messages sent through an untrusted relay',
    long_description=long_description,
    long_description_content_type='text/markdown',
    package_dir={'': 'src'},
    packages=find_packages(where='src'),
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Topic :: Security :: Cryptography',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Operating System :: OS Independent',
        'Environment :: Console',
    ],
    python_requires='>=3.8',
    install_requires=[
        'cryptography>=42.0.4',
        'argon2-cffi>=23.1.0',
        'rich>=13.7.0',
        'tomli>=2.0.1; python_version < "3.11"',
    ],
    extras_require={
        'test': [
            'pytest>=7.4.0',
            'pytest-asyncio>=0.23.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'portalcrypt=portalcrypt.main:main',
        ],
    },
)
