"""
Packaging for the serial to TCP bridge.

    pip install -e .[test]
    serial-tcp-bridge --base-dir /path/to/bridge

Tests live beside the modules as *_test.py and are collected by pytest.
"""

from setuptools import setup


setup(
    name='serial-tcp-bridge',
    version='0.1.0',
    description='Bridges a USB serial device to a TCP port, surviving unplugs and client reconnects.',
    url='',
    author='',
    author_email='',
    license='LGPL',
    package_dir={'': 'src'},
    packages=['serialbridge', 'serialbridge.conduit', 'serialbridge.config', 'serialbridge.support'],
    python_requires='>=3.8',
    install_requires=[
        'pyserial>=3.4',
        'configobj>=5.0.9',
        'filelock>=3.0',
    ],
    extras_require={
        'test': [
            'pytest',
            'PyHamcrest',
            'timeout-decorator',
        ],
    },
    entry_points={
        'console_scripts': [
            'serial-tcp-bridge = serialbridge.__main__:main',
        ],
    },
    zip_safe=False,
)
