from dataclasses import dataclass

import numpy as np


@dataclass
class SectionBeam:
    """
    Homogeneous, doubly-symmetric beam cross-section.

    Produces the diagonal 6x6 compliance and mass matrices used by the
    intrinsic beam elements, in local axes (x along the beam).

    Attributes:
        E: Young's modulus [Pa]
        G: Shear modulus [Pa]
        A: Cross-sectional area [m²]
        Iy: Second moment of area about local y [m⁴]
        Iz: Second moment of area about local z [m⁴]
        J: Torsion constant [m⁴] (Iy + Iz if not provided)
        rho: Density [kg/m³]
        ky, kz: Shear correction factors; None for shear-rigid sections
    """
    E: float
    G: float
    A: float
    Iy: float
    Iz: float
    J: float = None
    rho: float = 0.0
    ky: float = None
    kz: float = None

    def __post_init__(self):
        for name in ("E", "G", "A", "Iy", "Iz"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.rho < 0:
            raise ValueError(f"Density must be non-negative, got {self.rho}")
        if self.J is None:
            self.J = self.Iy + self.Iz

    @classmethod
    def rectangle(cls, E, G, b, h, rho=0.0, k=None):
        """Rectangular section of width b (local y) and height h (local z)."""
        a, c = max(b, h), min(b, h)
        J = a * c ** 3 * (1.0 / 3.0 - 0.21 * c / a * (1.0 - c ** 4 / (12.0 * a ** 4)))
        return cls(E=E, G=G, A=b * h, Iy=b * h ** 3 / 12.0, Iz=h * b ** 3 / 12.0,
                   J=J, rho=rho, ky=k, kz=k)

    @property
    def stiffness(self):
        """Diagonal rigidities [EA, kyGA, kzGA, GJ, EIy, EIz]; shear-rigid entries are inf."""
        gay = np.inf if self.ky is None else self.ky * self.G * self.A
        gaz = np.inf if self.kz is None else self.kz * self.G * self.A
        return np.array([self.E * self.A, gay, gaz, self.G * self.J,
                         self.E * self.Iy, self.E * self.Iz])

    def compliance(self):
        return np.diag(1.0 / self.stiffness)

    def mass(self):
        mu = self.rho * self.A
        return np.diag([mu, mu, mu, self.rho * (self.Iy + self.Iz),
                        self.rho * self.Iy, self.rho * self.Iz])
