from setuptools import find_namespace_packages, setup

setup(
    name='beeux-infra',
    version='0.3',
    py_modules=['beeuxctl'],
    packages=find_namespace_packages(include=['infra', 'infra.*']),
    package_data={'infra': ['config/*.yml']},
    install_requires=[
        'Click',
        'python-hcl2',
        'requests',
        'tqdm',
        'ipaddr',
        'PyYAML'
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points='''
        [console_scripts]
        beeuxctl=beeuxctl:main
    ''',
)
