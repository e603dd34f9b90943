from setuptools import find_namespace_packages, setup

# Installation du service :
#   pip install -e .[test]
# Lancement :
#   uvicorn magasin.app:app --reload

setup(
    name='GestionMagasin',
    version='1.0',
    description="Registre de stock et approvisionnement fournisseurs - Gestion Magasin",
    author='Sebastien Cangemi',
    author_email='contact@example.com',
    url='https://example.com/GestionMagasin',
    packages=find_namespace_packages(include=['magasin', 'magasin.*']),
    python_requires='>=3.10',
    install_requires=[
        'fastapi',
        'pydantic>=2',
        'uvicorn',
    ],
    extras_require={
        'test': ['pytest', 'httpx'],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'Framework :: FastAPI',
    ],
)
