from glob import glob

from setuptools import setup, find_packages

package_name = "scene_recognition"

setup(
    name=package_name,
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    data_files=[
        ("share/ament_index/resource_index/packages", ["resource/" + package_name]),
        ("share/" + package_name, ["package.xml"]),
        ("share/" + package_name + "/launch", glob("launch/*.launch.py")),
        ("share/" + package_name + "/config", glob("config/*")),
    ],
    install_requires=[
        "setuptools",
        "numpy",
        "scipy",
        "matplotlib",
        "pyyaml",
    ],
    extras_require={
        "test": ["pytest"],
    },
    zip_safe=True,
    maintainer="3dNAV Team",
    maintainer_email="dev@3dnav.io",
    description="Probabilistic scene recognition: learned object-type tables + power-set background inference",
    license="MIT",
    entry_points={
        "console_scripts": [
            "scene_inference_node = scene_recognition.scene_inference_node:main",
            "scene_recognition_offline = scene_recognition.offline_runner:main",
        ],
    },
)
