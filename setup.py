import setuptools

with open('README.md', 'r') as fh:
    long_description = fh.read()

with open('requirements.txt', 'r') as fh:
    requirements = [line.strip() for line in fh.readlines() if line.strip()]

setuptools.setup(
    name="spnet",
    version="0.1.0",
    author="Lorenzo Loconte, Gennaro Gala",
    author_email="lorenzoloconte@outlook.it, g.gala@tue.nl",
    description="Discriminative training of Sum-Product Networks with explicit graph structures",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(exclude=['tests', 'tests.*', 'experiments', 'examples']),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires='>=3.10',
    install_requires=requirements,
    extras_require={
        'test': ['pytest']
    },
)
