from setuptools import setup, find_packages

setup(
    name='app_object_importer',
    version='0.1.0',
    description='Import script sections, sheets and master items between BI application documents',
    packages=find_packages(exclude=['tests', 'tests.*']),
    python_requires='>=3.9',
    install_requires=[
        'requests>=2.28',
        'python-dotenv>=1.0',
    ],
    extras_require={
        'dev': ['pytest>=7.0'],
        'mcp': ['mcp[cli]>=1.2.0,<2'],
    },
    entry_points={
        'console_scripts': [
            'app-importer-mcp-server=app_object_importer.mcp_server:main',
        ],
    },
)
