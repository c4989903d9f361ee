"""Setup script for the cmdpipe host dispatcher."""

import os
from glob import glob
from setuptools import setup, find_packages

package_name = 'cmdpipe'


def get_data_files():
    """Collect all data files for installation."""
    data_files = []

    # Example configuration
    config_dir = os.path.join(os.path.dirname(__file__), 'config')
    if os.path.isdir(config_dir):
        config_files = glob(os.path.join(config_dir, '*.yaml'))
        if config_files:
            data_files.append((f'share/{package_name}/config', config_files))

    return data_files


setup(
    name=package_name,
    version='1.0.0',
    packages=find_packages(exclude=['test']),
    data_files=get_data_files(),
    install_requires=[
        'setuptools',
        'pyyaml>=6.0',
        'psutil>=5.9.0',
    ],
    extras_require={
        'dev': [
            'pytest>=7.0.0',
            'pytest-cov>=4.0.0',
            'black>=23.0.0',
            'isort>=5.12.0',
            'mypy>=1.0.0',
            'flake8>=6.0.0',
        ],
    },
    zip_safe=True,
    maintainer='cmdpipe maintainers',
    maintainer_email='maintainer@example.com',
    description='cmdpipe - run host commands written to a named pipe by a container',
    license='MIT',
    tests_require=['pytest'],
    entry_points={
        'console_scripts': [
            'cmdpipe = cmdpipe.cli:main',
        ],
    },
    python_requires='>=3.10',
)
