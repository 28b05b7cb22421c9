#!/usr/bin/python3 -O
# vim: fileencoding=utf-8

import os

import setuptools


# don't import: import * is unreliable and there is no need, since this is
# compile time and we have source files
def get_console_scripts():
    for filename in os.listdir('./vmbal/tools'):
        basename, ext = os.path.splitext(os.path.basename(filename))
        if basename == '__init__' or ext != '.py':
            continue
        yield '{} = vmbal.tools.{}:main'.format(
            basename.replace('_', '-'), basename)


if __name__ == '__main__':
    setuptools.setup(
        name='vmbal',
        version=open('version').read().strip(),
        author='The vmbal authors',
        description='vCPU and memory balancer for a single virtualization host',
        license='LGPL2.1+',
        packages=setuptools.find_packages(exclude=('tests',)),
        python_requires='>=3.9',
        install_requires=[
            'libvirt-python',
        ],
        extras_require={
            'test': [
                'pytest',
            ],
        },
        entry_points={
            'console_scripts': list(get_console_scripts()),
        })
