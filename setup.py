#!/usr/bin/env python
# -*- coding: utf-8 -*-


def main():
    from setuptools import setup

    ver_dic = {}
    exec(compile(open("tilescan/__init__.py").read(), "tilescan/__init__.py",
        "exec"), ver_dic)

    setup(name="tilescan",
            # metadata
            version=ver_dic["VERSION_TEXT"],
            description="Tiled parallel prefix sums on CPU threads and CUDA",
            long_description=open("README.rst", "rt").read(),
            author="The tilescan developers",
            license="MIT",
            classifiers=[
                "Environment :: Console",
                "Development Status :: 4 - Beta",
                "Intended Audience :: Developers",
                "Intended Audience :: Science/Research",
                "License :: OSI Approved :: MIT License",
                "Natural Language :: English",
                "Programming Language :: Python",
                "Programming Language :: Python :: 3",
                "Topic :: Scientific/Engineering",
                "Topic :: Scientific/Engineering :: Mathematics",
                ],

            # build info
            packages=["tilescan"],
            python_requires=">=3.8",

            install_requires=[
                "numpy>=1.17",
                "pytools>=2021.1",
                "mako",
                ],
            extras_require={
                "cuda": ["pycuda>=2021.1"],
                "test": ["pytest>=2"],
                },

            zip_safe=False)


if __name__ == "__main__":
    main()
