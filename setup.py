import setuptools

VERSION = '0.1.0'

TEST_REQUIRES = [
    'mockito>=1.4',
    'pytest>=7',
    'pytest-cov>=4',
    'ddt>=1.6',
]

setup_params = dict(
    name='endpointer',
    version=VERSION,
    keywords='requests http client cache throttle',
    packages=setuptools.find_namespace_packages(include=['endpointer', 'endpointer.*']),
    package_dir={'endpointer': 'endpointer'},
    include_package_data=True,
    description='HTTP endpoints with response caching, expiry policies, throttling and mocking, built on requests',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    install_requires=['requests>=2.28', 'platformdirs>=3'],
    extras_require={
        'dev': TEST_REQUIRES,
        'test': TEST_REQUIRES,
    },
    entry_points={},
    python_requires='>=3.8',
    classifiers=[
        'Development Status :: 2 - Pre-Alpha',
        'Environment :: Web Environment',
        'Intended Audience :: Developers',
        'Natural Language :: English',
        'Operating System :: OS Independent',

        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3 :: Only',
    ],
)


if __name__ == '__main__':
    setuptools.setup(**setup_params)
